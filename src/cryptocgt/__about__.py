__title__ = "CryptoCGT"
__version__ = "0.3.0"
