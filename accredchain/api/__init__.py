"""HTTP routers for AccredChain."""
