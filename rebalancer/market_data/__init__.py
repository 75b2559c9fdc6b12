from .oracle import HttpPriceOracle, to_fixed_point

__all__ = ["HttpPriceOracle", "to_fixed_point"]
