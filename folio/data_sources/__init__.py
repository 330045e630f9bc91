from .market_data import MarketDataClient, PriceHistoryProvider, StaticPriceProvider
