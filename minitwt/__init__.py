"""minitwt feed API: accounts, tweets, likes and search over a relational store."""

__version__ = "1.0.0"
