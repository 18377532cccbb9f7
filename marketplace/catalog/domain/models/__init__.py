from .catalog import Product, Store


__all__ = ["Store", "Product"]
