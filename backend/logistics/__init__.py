"""Invoice batch processing service: storage, external clients, the invoice
pipeline steps, and the CLI and HTTP surfaces around them."""
