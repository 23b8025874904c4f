"""
Token Aggregator - Solana 代币多数据源聚合服务
"""

__version__ = "0.1.0"
