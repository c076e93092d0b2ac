"""Transfer and bridge actions built on the wallet provider."""
