"""
Technical indicator calculation from OHLCV history.

Modules
-------
technical : rsi / macd / bollinger / sma / atr / volume_ratio primitives,
            compute_indicators() and build_snapshot() — pure functions.
"""
