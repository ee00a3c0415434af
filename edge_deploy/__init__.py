"""Edge deployment service: provisions GitOps-managed edge clusters."""
