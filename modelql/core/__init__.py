"""Request-context and filter helpers shared by the resolvers."""
