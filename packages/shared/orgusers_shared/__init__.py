"""Wire schemas shared by the org users server and its UI clients."""
