"""Field work photo reports: validate, analyse, and deliver."""
