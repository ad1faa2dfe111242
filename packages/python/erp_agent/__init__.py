# ERP assistant agent: streaming turn loop, tool orchestration, sequenced events.
from . import common
from . import llm
from . import kb
from . import agent
