"""Run integration tests for a client app inside throwaway virtual machines."""
