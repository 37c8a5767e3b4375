from sqlalchemy import Boolean, CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from db.base import Base


ASSET_STATUSES = ("AVAILABLE", "CHECKED_OUT", "IN_MAINTENANCE", "RETIRED", "MISSING", "RESERVED")
ASSET_CONDITIONS = ("EXCELLENT", "GOOD", "FAIR", "POOR", "NEEDS_REPAIR")
TRANSACTION_TYPES = ("CHECK_OUT", "CHECK_IN")
TRANSACTION_STATUSES = ("ACTIVE", "COMPLETED", "OVERDUE", "CANCELLED")
MAINTENANCE_TYPES = ("PREVENTIVE", "CORRECTIVE", "CALIBRATION", "INSPECTION", "CLEANING")
MAINTENANCE_STATUSES = ("SCHEDULED", "IN_PROGRESS", "COMPLETED", "CANCELLED", "OVERDUE")
MAINTENANCE_PRIORITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")
USER_ROLES = ("ADMIN", "MANAGER", "USER", "VIEWER")
PRESET_CHECKOUT_STATUSES = ("IN_PROGRESS", "PARTIAL", "COMPLETED", "RETURNED", "CANCELLED")
CHECKOUT_ITEM_STATUSES = ("PENDING", "ASSIGNED", "CHECKED_OUT", "SUBSTITUTED", "UNAVAILABLE", "SKIPPED")


class Department(Base):
    __tablename__ = "Departments"

    DepartmentID = Column(Integer, primary_key=True)
    Name = Column(String(100), nullable=False, unique=True)
    Description = Column(String(500))
    Manager = Column(String(200))
    IsActive = Column(Boolean, default=True)
    CreatedAt = Column(DateTime, server_default=func.now())
    UpdatedAt = Column(DateTime, server_default=func.now())

    Users = relationship("User", back_populates="Department")


class User(Base):
    __tablename__ = "Users"

    UserID = Column(Integer, primary_key=True)
    Email = Column(String(255), nullable=False, unique=True)
    Name = Column(String(255), nullable=False)
    Role = Column(String(20), nullable=False, default="USER")
    DepartmentID = Column(Integer, ForeignKey("Departments.DepartmentID"))
    PasswordHash = Column(String(256))
    PasswordSalt = Column(String(64))
    PasswordUpdatedAt = Column(Integer)
    IsActive = Column(Boolean, default=True)
    CreatedAt = Column(DateTime, server_default=func.now())
    UpdatedAt = Column(DateTime, server_default=func.now())

    Department = relationship("Department", back_populates="Users")


class Client(Base):
    __tablename__ = "Clients"

    ClientID = Column(Integer, primary_key=True)
    Name = Column(String(255), nullable=False, unique=True)
    Code = Column(String(10), nullable=False, unique=True)
    Description = Column(String(1000))
    Contact = Column(String(255))
    Email = Column(String(255))
    Phone = Column(String(50))
    Address = Column(String(500))
    IsActive = Column(Boolean, default=True)
    CreatedAt = Column(DateTime, server_default=func.now())
    UpdatedAt = Column(DateTime, server_default=func.now())

    Assets = relationship("Asset", back_populates="Client")


class Location(Base):
    __tablename__ = "Locations"

    LocationID = Column(Integer, primary_key=True)
    Name = Column(String(255), nullable=False, unique=True)
    Building = Column(String(255))
    Floor = Column(String(50))
    Room = Column(String(50))
    Description = Column(String(500))
    Capacity = Column(Integer)
    IsActive = Column(Boolean, default=True)
    CreatedAt = Column(DateTime, server_default=func.now())
    UpdatedAt = Column(DateTime, server_default=func.now())

    Assets = relationship("Asset", back_populates="Location")


class CustomCategory(Base):
    __tablename__ = "CustomCategories"

    CategoryID = Column(Integer, primary_key=True)
    CategoryKey = Column(String(50), nullable=False, unique=True)
    Name = Column(String(100), nullable=False, unique=True)
    Code = Column(String(3), nullable=False, unique=True)
    Description = Column(String(500))
    IsActive = Column(Boolean, default=True)
    CreatedByID = Column(Integer, ForeignKey("Users.UserID"))
    CreatedAt = Column(DateTime, server_default=func.now())


class Asset(Base):
    __tablename__ = "Assets"

    AssetID = Column(Integer, primary_key=True)
    Name = Column(String(255), nullable=False)
    Description = Column(String(2000))
    Category = Column(String(50), nullable=False, default="OTHER")
    ClientID = Column(Integer, ForeignKey("Clients.ClientID"))
    AssetNumber = Column(String(30), unique=True)
    SerialNumber = Column(String(255), unique=True)
    Barcode = Column(String(255), unique=True)
    Status = Column(String(20), nullable=False, default="AVAILABLE")
    Condition = Column(String(20), default="GOOD")
    LocationID = Column(Integer, ForeignKey("Locations.LocationID"))
    Manufacturer = Column(String(255))
    Model = Column(String(255))
    PurchaseDate = Column(Date)
    PurchasePrice = Column(Numeric(12, 2))
    CurrentValue = Column(Numeric(12, 2))
    Notes = Column(String(2000))
    ImageUrl = Column(String(1000))
    IsActive = Column(Boolean, default=True)
    CreatedByID = Column(Integer, ForeignKey("Users.UserID"))
    LastModifiedByID = Column(Integer, ForeignKey("Users.UserID"))
    CreatedAt = Column(DateTime, server_default=func.now())
    UpdatedAt = Column(DateTime, server_default=func.now())

    Client = relationship("Client", back_populates="Assets")
    Location = relationship("Location", back_populates="Assets")
    Transactions = relationship("AssetTransaction", back_populates="Asset")
    MaintenanceRecords = relationship("MaintenanceRecord", back_populates="Asset")


class AssetTransaction(Base):
    __tablename__ = "AssetTransactions"

    TransactionID = Column(Integer, primary_key=True)
    AssetID = Column(Integer, ForeignKey("Assets.AssetID"), nullable=False)
    UserID = Column(Integer, ForeignKey("Users.UserID"), nullable=False)
    Type = Column(String(20), nullable=False)
    Status = Column(String(20), nullable=False, default="ACTIVE")
    CheckOutDate = Column(DateTime)
    ExpectedReturnDate = Column(DateTime)
    ActualReturnDate = Column(DateTime)
    Notes = Column(String(2000))
    PresetCheckoutID = Column(Integer, ForeignKey("PresetCheckouts.PresetCheckoutID"))
    CreatedAt = Column(DateTime, server_default=func.now())
    UpdatedAt = Column(DateTime, server_default=func.now())

    Asset = relationship("Asset", back_populates="Transactions")
    User = relationship("User")


class MaintenanceRecord(Base):
    __tablename__ = "MaintenanceRecords"

    MaintenanceID = Column(Integer, primary_key=True)
    AssetID = Column(Integer, ForeignKey("Assets.AssetID"), nullable=False)
    Type = Column(String(20), nullable=False)
    Status = Column(String(20), nullable=False, default="SCHEDULED")
    Priority = Column(String(20), default="MEDIUM")
    Description = Column(String(2000), nullable=False)
    ScheduledDate = Column(Date)
    PerformedDate = Column(Date)
    Cost = Column(Numeric(12, 2))
    ActualCost = Column(Numeric(12, 2))
    PerformedByID = Column(Integer, ForeignKey("Users.UserID"))
    CreatedByID = Column(Integer, ForeignKey("Users.UserID"))
    Notes = Column(String(2000))
    CompletionNotes = Column(String(2000))
    CreatedAt = Column(DateTime, server_default=func.now())
    UpdatedAt = Column(DateTime, server_default=func.now())

    Asset = relationship("Asset", back_populates="MaintenanceRecords")


class PresetCategory(Base):
    __tablename__ = "PresetCategories"

    PresetCategoryID = Column(Integer, primary_key=True)
    Name = Column(String(100), nullable=False, unique=True)
    Description = Column(String(500))
    IsActive = Column(Boolean, default=True)
    CreatedAt = Column(DateTime, server_default=func.now())


class PresetDepartment(Base):
    __tablename__ = "PresetDepartments"

    PresetDepartmentID = Column(Integer, primary_key=True)
    Name = Column(String(100), nullable=False, unique=True)
    Description = Column(String(500))
    IsActive = Column(Boolean, default=True)
    CreatedAt = Column(DateTime, server_default=func.now())


class Preset(Base):
    __tablename__ = "Presets"

    PresetID = Column(Integer, primary_key=True)
    Name = Column(String(255), nullable=False)
    Description = Column(String(2000))
    Category = Column(String(100))
    Department = Column(String(100))
    Priority = Column(Integer, default=0)
    IsActive = Column(Boolean, default=True)
    IsTemplate = Column(Boolean, default=False)
    Notes = Column(String(2000))
    CreatedByID = Column(Integer, ForeignKey("Users.UserID"))
    CreatedAt = Column(DateTime, server_default=func.now())
    UpdatedAt = Column(DateTime, server_default=func.now())

    Items = relationship(
        "PresetItem",
        back_populates="Preset",
        cascade="all, delete-orphan",
        order_by="[PresetItem.Priority, PresetItem.PresetItemID]",
    )
    Checkouts = relationship("PresetCheckout", back_populates="Preset", cascade="all, delete-orphan")


class PresetItem(Base):
    __tablename__ = "PresetItems"

    PresetItemID = Column(Integer, primary_key=True)
    PresetID = Column(Integer, ForeignKey("Presets.PresetID"), nullable=False)
    AssetID = Column(Integer, ForeignKey("Assets.AssetID"))
    Category = Column(String(50))
    Name = Column(String(255), nullable=False)
    Quantity = Column(Integer, default=1)
    IsRequired = Column(Boolean, default=True)
    Priority = Column(Integer, default=0)
    Notes = Column(String(1000))

    Preset = relationship("Preset", back_populates="Items")
    Asset = relationship("Asset")
    Substitutions = relationship(
        "PresetItemSubstitution",
        back_populates="PresetItem",
        cascade="all, delete-orphan",
        order_by="[PresetItemSubstitution.Preference, PresetItemSubstitution.SubstitutionID]",
    )
    CheckoutItems = relationship("PresetCheckoutItem", back_populates="PresetItem")


class PresetItemSubstitution(Base):
    __tablename__ = "PresetItemSubstitutions"
    __table_args__ = (UniqueConstraint("PresetItemID", "SubstituteAssetID", name="uq_substitution_item_asset"),)

    SubstitutionID = Column(Integer, primary_key=True)
    PresetItemID = Column(Integer, ForeignKey("PresetItems.PresetItemID"), nullable=False)
    SubstituteAssetID = Column(Integer, ForeignKey("Assets.AssetID"), nullable=False)
    Preference = Column(Integer, default=0)
    Notes = Column(String(500))

    PresetItem = relationship("PresetItem", back_populates="Substitutions")
    SubstituteAsset = relationship("Asset")


class PresetCheckout(Base):
    __tablename__ = "PresetCheckouts"

    PresetCheckoutID = Column(Integer, primary_key=True)
    PresetID = Column(Integer, ForeignKey("Presets.PresetID"), nullable=False)
    UserID = Column(Integer, ForeignKey("Users.UserID"))
    Status = Column(String(20), nullable=False, default="IN_PROGRESS")
    CheckoutDate = Column(DateTime, server_default=func.now())
    ExpectedReturnDate = Column(DateTime)
    ActualReturnDate = Column(DateTime)
    CompletionPercent = Column(Integer, default=0)
    Notes = Column(String(2000))

    Preset = relationship("Preset", back_populates="Checkouts")
    Items = relationship(
        "PresetCheckoutItem",
        back_populates="PresetCheckout",
        cascade="all, delete-orphan",
        order_by="PresetCheckoutItem.PresetCheckoutItemID",
    )


class PresetCheckoutItem(Base):
    __tablename__ = "PresetCheckoutItems"
    __table_args__ = (
        CheckConstraint(
            "(AssetID IS NULL AND Status IN ('PENDING', 'UNAVAILABLE', 'SKIPPED'))"
            " OR (AssetID IS NOT NULL AND Status IN ('ASSIGNED', 'SUBSTITUTED', 'CHECKED_OUT'))",
            name="ck_checkout_item_asset_status",
        ),
    )

    PresetCheckoutItemID = Column(Integer, primary_key=True)
    PresetCheckoutID = Column(Integer, ForeignKey("PresetCheckouts.PresetCheckoutID"), nullable=False)
    PresetItemID = Column(Integer, ForeignKey("PresetItems.PresetItemID"), nullable=False)
    AssetID = Column(Integer, ForeignKey("Assets.AssetID"))
    Status = Column(String(20), nullable=False, default="PENDING")
    IsSubstitute = Column(Boolean, default=False)
    Notes = Column(String(500))

    PresetCheckout = relationship("PresetCheckout", back_populates="Items")
    PresetItem = relationship("PresetItem", back_populates="CheckoutItems")
    Asset = relationship("Asset")


class AuditLog(Base):
    __tablename__ = "AuditLogs"

    AuditID = Column(Integer, primary_key=True)
    EntityType = Column(String(50), nullable=False)
    EntityID = Column(Integer, nullable=False)
    Action = Column(String(100), nullable=False)
    Details = Column(String(2000))
    UserID = Column(Integer)
    CreatedAt = Column(DateTime, server_default=func.now())
