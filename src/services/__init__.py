"""Services: ledger, chain and DEX clients, TWAP execution, deposits, notifications"""
