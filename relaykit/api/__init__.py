"""HTTP surface for relaykit operators."""
