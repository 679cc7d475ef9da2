"""Business logic, one service per area of the store."""
