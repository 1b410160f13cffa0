from .schema_builder import FormSchemaBuilder, SchemaSources, synthesize_field

__all__ = ["FormSchemaBuilder", "SchemaSources", "synthesize_field"]
