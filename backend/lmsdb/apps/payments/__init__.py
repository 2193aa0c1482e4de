"""Course purchases, admin review and payment gateway confirmation."""
