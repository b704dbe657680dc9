"""Import pipeline building blocks shared by the sequential and parallel paths."""
