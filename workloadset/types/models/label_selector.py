from typing import Dict, List, Optional
from workloadset.types.base import BaseModel


class LabelSelector(BaseModel):
    """Label query over pods and claims."""

    match_labels: Optional[Dict[str, str]]
    match_expressions: Optional[List[Dict]]

    def as_selector(self) -> Dict:
        """Return the selector in its API (camelCase) form."""
        selector = {}
        if self.match_labels:
            selector["matchLabels"] = dict(self.match_labels)
        if self.match_expressions:
            selector["matchExpressions"] = [dict(e) for e in self.match_expressions]
        return selector
