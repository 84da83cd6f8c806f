"""OrderFlow — order lifecycle and real-time notification service."""
