"""Application layer - session lifecycle and the sign-in façade."""
