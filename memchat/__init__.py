"""memchat: retrieval-augmented chat over a private sentence memory."""
