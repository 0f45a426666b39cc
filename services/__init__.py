"""
服務層

這個 package 包含計算邏輯與外部服務 client，不負責狀態轉換：
- PayoffService：倉位計分
- RoundPhaseService：每日排程時間計算
- NamingService：回合 ID 生成、公鑰驗證
- PriceOracle：外部價格來源
- VaultAuthority：回合狀態與獎池的外部權威
- History / Eligibility：歷史排行榜與參賽資格查詢
"""
