"""Local store for the novelflow writing workflow app."""
