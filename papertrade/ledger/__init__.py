from papertrade.ledger.ledger import LedgerResult, buy, coerce_price, coerce_qty, sell, valuation

__all__ = ["LedgerResult", "buy", "coerce_price", "coerce_qty", "sell", "valuation"]
