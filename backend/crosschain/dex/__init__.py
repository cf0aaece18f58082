"""DEX pool creation for graduating tokens."""
