"""AI Gateway Layer.

Provides async infrastructure for calling heterogeneous AI backends through
one interface:
  - Capability Interfaces (chat, embeddings, vision, generation, speech)
  - Provider Adapters (protocol differences, stream framing, binary payloads)
  - Circuit Breaker (per provider-operation, shared store)
  - Quota Enforcer (lifetime and rolling-window ceilings per tier)
  - Model Selector ("Again" ranking and round-robin prediction)
  - Gateway Facade (resolve -> quota -> breaker -> adapter -> usage)
"""
