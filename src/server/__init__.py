# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from typing import TYPE_CHECKING

__all__ = ["app", "StreamPersistenceContext"]

if TYPE_CHECKING:  # pragma: no cover
    from .app import StreamPersistenceContext as _StreamPersistenceContext
    from .app import app as _app


def __getattr__(name: str):  # pragma: no cover - importing the app configures the store lazily
    if name in __all__:
        from . import app as app_module

        return getattr(app_module, name)
    raise AttributeError(name)
