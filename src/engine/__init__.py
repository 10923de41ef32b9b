"""Structure comparison engine and service clients for MutaView."""
