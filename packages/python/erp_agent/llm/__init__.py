from .signals import *
from .llm import *
from .stream import *
from .provider import *
