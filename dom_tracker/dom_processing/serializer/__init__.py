from .clickable_elements import ClickableElementProcessor
from .serializer import DOMTreeSerializer

__all__ = ['ClickableElementProcessor', 'DOMTreeSerializer']
