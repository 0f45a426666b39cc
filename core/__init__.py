"""
核心業務邏輯層

這個 package 包含所有核心業務邏輯，包括：
- RoundScheduler：每日回合狀態機（輪替、開放/暫停 deposit、結算）
- Manager / Ledger：回合 ID、點數、倉位的生命週期
- SettlementEngine：排行榜結算、歸檔、選出贏家
- Locks / Retry：並發控制與有限次數重試
"""
