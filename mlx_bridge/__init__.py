"""mlx-bridge: streaming provider adapter for MLX-LM completion servers."""

__version__ = "0.1.0"
