"""Package for handling RTSTRUCT data."""

from rtcontour.dcm.rtstruct import RTStruct

__all__ = ["RTStruct"]
