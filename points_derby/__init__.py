"""Point-wagering minigames: the curve derby race engine and its side games."""
