"""User lookup, presence listing and private-chat start endpoints."""
