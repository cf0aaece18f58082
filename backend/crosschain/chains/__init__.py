"""Chain clients, bridge contract wrapper and chain registry."""
