"""编排层（engine）。

`TradingEngine` 把行情流接到指标引擎与决策管线，并在组合锁下驱动账本与风控；
命令行入口由仓库根目录 `main.py` 统一承载。
"""
