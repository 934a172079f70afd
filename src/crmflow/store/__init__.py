"""Record store access: the abstract interface and its HTTP implementation."""
