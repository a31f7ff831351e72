"""Remote schedule stores."""
