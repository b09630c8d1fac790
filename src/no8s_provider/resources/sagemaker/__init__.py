"""Amazon SageMaker resource types."""
