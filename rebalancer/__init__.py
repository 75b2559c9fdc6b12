"""Liquidity rebalancing and best-execution routing engine.

Packages:

- automation: threshold policy, policy config, safety checks, audit trail, scheduler
- portfolio: the engine-owned position state
- liquidity: rebalance controller and pluggable sizing strategies
- execution: collaborator interfaces, the multi-venue router, paper collaborators
- market_data: reference price oracles
- persistence: persistence boundary (interfaces)
- storage: concrete persistence implementations (memory, PostgreSQL)

`engine.LiquidityEngine` wires everything together; `config.EngineConfig`
loads settings from the environment.
"""
