"""
API Gateway Service package for TokenGate.

The gateway fronts paid third-party APIs, enforcing:
- Identity: wallet address header, optionally proven by an Ed25519 signature
- Access: an active, non-exhausted access key on the ledger
- Rate limiting: per-wallet fixed windows sized by each API's ceiling
- Usage accounting: best-effort, off the request path

Structure:
- app.main: FastAPI app, routes, and wiring.
- app.identity: Wallet address and signature checks.
- app.ledger: Record types, derived addresses, in-memory ledger.
- app.adapters: Solana JSON-RPC ledger backend.
- app.ratelimit: Fixed-window limiter and its stores.
- app.domain: Access gate, ledger read client, usage recorder.
"""
