"""Sunday companion: chat API with bounded-context conversational memory."""
