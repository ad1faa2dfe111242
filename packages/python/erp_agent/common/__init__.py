from .id import *
from .setup import *
from .client import *
