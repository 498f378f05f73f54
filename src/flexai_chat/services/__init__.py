"""Engine services: reply generation, streaming lifecycle and history queries."""
