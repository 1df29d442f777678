from .common import *  # noqa
from .auth import *  # noqa
from .iam_tokens import *  # noqa
from .organizations import *  # noqa
from .system_modules import *  # noqa
from .security_audit import *  # noqa
