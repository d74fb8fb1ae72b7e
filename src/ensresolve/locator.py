"""Resolver discovery by walking the name hierarchy in the index."""

from __future__ import annotations

import logging
from typing import Optional

from .index import IndexReader
from .models import ResolverAssignment
from .names import iter_hierarchy
from .reverse_names import ZERO_ADDRESS
from .tracing import NULL_SPAN, TraceSpan

logger = logging.getLogger("ensresolve.locator")


def find_resolver(
    index: IndexReader,
    name: str,
    *,
    chain_id: int,
    span: TraceSpan = NULL_SPAN,
) -> Optional[ResolverAssignment]:
    """Brief: Find the active resolver for name (ENSIP-10 style ancestor walk).

    Inputs:
      - index: IndexReader.
      - name: Interpreted name.
      - chain_id: Chain whose registry is searched.
      - span: Parent trace span.

    Outputs:
      - ResolverAssignment for the nearest node with a resolver, with
        requires_wildcard set when that node is an ancestor of name; None when
        no node up to the root has one.

    Raises:
      - InvalidName: name has empty labels.
      - TransientError: From the index; never converted into "not found".
    """

    with span.step("find-resolver", name=name, chain_id=chain_id) as step:
        for depth, (sub_name, node) in enumerate(iter_hierarchy(name)):
            resolver = index.get_resolver_assignment(node, chain_id=chain_id)
            if resolver is None:
                continue
            if resolver.address == ZERO_ADDRESS:
                logger.warning(
                    "Index returned zero-address resolver for %r on chain %s; ignoring",
                    sub_name,
                    chain_id,
                )
                continue
            assignment = ResolverAssignment(
                name=sub_name,
                node=node,
                resolver=resolver,
                requires_wildcard=depth > 0,
            )
            step.set_attribute("resolver", str(resolver))
            step.set_attribute("found_at", sub_name)
            step.set_attribute("requires_wildcard", assignment.requires_wildcard)
            logger.debug("Resolver for %r: %s at %r", name, resolver, sub_name)
            return assignment

        step.set_attribute("resolver", None)
        logger.debug("No resolver for %r on chain %s", name, chain_id)
        return None
