"""BantayBarangay: barangay alerting and rescue coordination backend."""
