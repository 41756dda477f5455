"""
    Copyright 2026 Inmanta

    Licensed under the Apache License, Version 2.0 (the "License");
    you may not use this file except in compliance with the License.
    You may obtain a copy of the License at

        http://www.apache.org/licenses/LICENSE-2.0

    Unless required by applicable law or agreed to in writing, software
    distributed under the License is distributed on an "AS IS" BASIS,
    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
    See the License for the specific language governing permissions and
    limitations under the License.

    Contact: code@inmanta.com
"""
import pytest

from jenkinsconf import const
from jenkinsconf.collection import ResourceCollection
from jenkinsconf.exceptions import DuplicateResourceError, ResourceNotFoundError
from jenkinsconf.resources import Resource, resource


@resource("test_item")
class Item(Resource):
    pass


def names(collection: ResourceCollection) -> list[str]:
    return [r.name for r in collection.all()]


def test_declare_in_order():
    collection = ResourceCollection()
    for name in ("a", "b", "c"):
        collection.declare(Item(name))

    assert len(collection) == 3
    assert names(collection) == ["a", "b", "c"]
    assert "test_item[b]" in collection
    assert collection.find("test_item", "b").name == "b"
    assert collection.lookup("test_item[c]").name == "c"


def test_duplicates():
    collection = ResourceCollection()
    first = collection.declare(Item("a"))

    with pytest.raises(DuplicateResourceError):
        collection.declare(Item("a"))

    assert collection.declare(Item("a"), allow_existing=True) is first
    assert len(collection) == 1


def test_not_found():
    collection = ResourceCollection()
    with pytest.raises(ResourceNotFoundError):
        collection.find("test_item", "missing")
    with pytest.raises(ResourceNotFoundError):
        collection.insert_relative(Item("b"), Item("missing"))


def test_insert_relative():
    collection = ResourceCollection()
    a = collection.declare(Item("a"))
    collection.declare(Item("z"))

    collection.insert_relative(Item("a1"), a)
    collection.insert_relative(Item("a2"), a)
    collection.insert_relative(Item("before1"), a, const.Position.before)
    collection.insert_relative(Item("before2"), a, "before")

    assert names(collection) == ["before1", "before2", "a", "a1", "a2", "z"]


def test_children_of_children_stay_with_their_parent():
    collection = ResourceCollection()
    parent = collection.declare(Item("parent"))
    collection.declare(Item("next"))

    child = collection.insert_relative(Item("child"), parent)
    collection.insert_relative(Item("grandchild"), child)
    collection.insert_relative(Item("child2"), parent)

    assert names(collection) == ["parent", "child", "grandchild", "child2", "next"]


def test_declare_while_walking():
    collection = ResourceCollection()
    for name in ("a", "b"):
        collection.declare(Item(name))

    seen = []
    for current in collection.each():
        seen.append(current.name)
        if current.name == "a":
            # lands right after the resource that is being walked and is walked as well
            collection.declare(Item("a-extra1"))
            collection.declare(Item("a-extra2"))
        if current.name == "b":
            collection.insert_relative(Item("before-b"), current, const.Position.before)

    assert seen == ["a", "a-extra1", "a-extra2", "b"]
    assert names(collection) == ["a", "a-extra1", "a-extra2", "before-b", "b"]

    # outside of a walk, resources are appended again
    collection.declare(Item("c"))
    assert names(collection)[-1] == "c"
